"""HTTP clients for the messaging providers the inbox talks to."""
