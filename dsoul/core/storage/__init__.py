from dsoul.core.storage.paths import dsoul_home, logs_dir, skills_data_dir

__all__ = ["dsoul_home", "logs_dir", "skills_data_dir"]
