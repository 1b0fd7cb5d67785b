"""
LensRelay - Camera capture, media relay and detection overlay

Captures stills, timed frames and video clips, relays them to blob storage
and a message broker for asynchronous object detection, and paints the
returned detections back over the captured image.
"""

__version__ = "1.0.0"
__author__ = "LensRelay Team"
