"""missionhub — gamified-mission backend."""
