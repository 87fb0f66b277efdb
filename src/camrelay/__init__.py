"""CamRelay: live camera sources to browser-playable HLS sessions."""

__version__ = "1.0.0"
