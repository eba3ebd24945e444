"""High Street Gym: class bookings, trainer schedules and XML exports."""
