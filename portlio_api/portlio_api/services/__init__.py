"""Service layer for the Portlio API."""
