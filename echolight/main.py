from echolight.api.main import app

__all__ = ["app"]
