"""Graph change-notification intake for online meetings."""
