"""Application services and the geometry engines they drive."""
