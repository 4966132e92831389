from __future__ import annotations


class ScribeError(RuntimeError):
    def __init__(self, code: str, message: str, component: str):
        super().__init__(message)
        self.code = code
        self.message = message
        self.component = component


class TransportError(ScribeError):
    """Streaming channel dropped or failed its handshake. Recoverable via bounded retry."""

    def __init__(self, message: str, code: str = "TRANSPORT_FAILED"):
        super().__init__(code, message, "streaming")


class DiarizationServiceError(ScribeError):
    """Batch diarization backend rejected the request or returned nothing usable."""

    def __init__(self, message: str, code: str = "DIARIZATION_FAILED"):
        super().__init__(code, message, "diarization")


class NoAudioError(ScribeError):
    def __init__(self, message: str = "No audio data available for diarization"):
        super().__init__("NO_AUDIO", message, "diarization")


class DevicePermissionError(ScribeError):
    """Microphone access denied or device unavailable. Never retried."""

    def __init__(self, message: str):
        super().__init__("DEVICE_PERMISSION", message, "capture")
