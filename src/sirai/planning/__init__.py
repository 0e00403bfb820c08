"""Planning, execution, validation and history of task plans."""
