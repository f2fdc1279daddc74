from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_file='.env', extra='ignore')

    app_name: str = 'Cohort Admin'
    app_env: str = 'local'
    app_timezone: str = 'UTC'
    database_url: str = 'sqlite:///./cohort_admin.db'
    app_base_url: str = 'http://localhost:3000'
    auth_secret: str = 'change-me'
    auth_session_expiry_hours: int = 12
    invitation_ttl_days: int = 7
    invitation_email_url: str = ''
    invitation_email_api_key: str = ''
    # Python weekday() numbering: Monday=0 ... Sunday=6
    student_class_weekdays: str = '6,1,3'
    teacher_class_weekdays: str = '5,0,3'
    student_id_max_attempts: int = 10
    db_slow_query_ms: int = 100
    metrics_slow_ms: int = 200


settings = Settings()
