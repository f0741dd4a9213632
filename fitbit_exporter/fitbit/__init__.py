"""Fitbit Web API access: OAuth2, heart-rate client and payload models."""
