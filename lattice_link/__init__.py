"""lattice-link: declarative reconciler for cross-VPC VPC Lattice connectivity."""

__version__ = "1.0.0"
