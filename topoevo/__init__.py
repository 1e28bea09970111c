"""Neuroevolution control loop with structural plasticity."""

__version__ = "0.1.0"
