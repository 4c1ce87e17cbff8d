"""Download recorded Webex lectures of Politecnico di Milano."""

__version__ = "2.0.0"
