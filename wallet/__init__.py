"""Client-side helpers for building and using address clouds."""

from .address_cloud import AddressCloud, MIN_CLOUD_SIZE, MAX_CLOUD_SIZE

__all__ = ['AddressCloud', 'MIN_CLOUD_SIZE', 'MAX_CLOUD_SIZE']
