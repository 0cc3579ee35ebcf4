"""Write-once task checkpoints for resuming interrupted work."""
