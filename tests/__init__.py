"""Tests for storefront-auth."""
