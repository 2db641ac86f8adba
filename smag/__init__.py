"""smag (Show Me A Graph): як `watch`, але з графіком попередніх значень."""

__version__ = "0.1.0"
