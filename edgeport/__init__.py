"""Edge node network ports: driver binding, Open vSwitch bridges and service running."""

__version__ = "1.0.0"