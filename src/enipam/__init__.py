"""
enipam: ENI and secondary address management for container networking.

Allocates secondary private IPs across a cloud instance's elastic network
interfaces within the instance type's limits, keeps a durable registry of
free addresses, and reclaims the idle ones.
"""

__version__ = "0.1.0"
