"""Pure domain layer: workflows, allocation planning, events, DTOs and time."""
