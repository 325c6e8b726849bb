"""Task handlers that perform the external work for each queue."""
