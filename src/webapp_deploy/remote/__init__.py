"""SSH command execution, SCP upload and the fixed host-side operations."""
