from relay.service.stream_session import StreamSession

__all__ = ["StreamSession"]
