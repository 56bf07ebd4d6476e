"""Media ingestion, cataloguing and geofence classification."""
