"""Decision engine core: pending actions, conversation state and the coach pipeline."""
