"""streamgate — multiplexed Server-Sent Events session gateway."""

__version__ = "0.1.0"
