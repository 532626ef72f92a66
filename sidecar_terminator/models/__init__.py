"""Data types shared across the controller."""
