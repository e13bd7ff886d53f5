"""External collaborators: messaging gateway and AI completion clients."""
