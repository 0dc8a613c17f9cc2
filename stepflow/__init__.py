"""Shipment step tracking: dynamic step field schemas and their evaluation."""
