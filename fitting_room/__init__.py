"""Virtual fitting room: try clothes on a selfie with a generative image model."""

__version__ = "0.1.0"
