"""tigstack: bootstrap provisioner for the TIG monitoring stack on K3s."""

__version__ = "2.1.0"
