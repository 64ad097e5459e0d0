"""Session state, workflow errors and the dictation controller."""
