"""HTTP shell for the photo classifier."""
