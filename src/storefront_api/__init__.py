"""Storefront checkout settlement service."""
