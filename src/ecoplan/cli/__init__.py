"""EcoPlan command-line interface."""
