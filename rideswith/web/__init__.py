"""Flask web application: pages, JSON API and sign in."""
