"""ShelterWatch: anonymous shelter-indicator detections with a live map feed."""

__version__ = "1.0.0"
