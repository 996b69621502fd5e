"""Magic links module - single-use sign-in links for off-platform contacts."""
