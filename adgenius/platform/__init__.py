"""Platform concerns shared by every route: errors and authentication."""
