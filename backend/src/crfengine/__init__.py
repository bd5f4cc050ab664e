"""crfengine: validation rules and lifecycle workflow for clinical report forms."""

__version__ = "0.1.0"
