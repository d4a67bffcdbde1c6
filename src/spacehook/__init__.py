"""Spacehook: webhook ingestion and live dashboard API."""
