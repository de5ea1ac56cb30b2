from jobstream.client.session import ProcessingSession

__all__ = ["ProcessingSession"]
