"""USB/IP message codecs, a URB worker pool and a threaded TCP server for virtual USB devices."""

__version__ = "0.1.0"