from pydantic_settings import BaseSettings, SettingsConfigDict


# Settings loader using pydantic
class Settings(BaseSettings):
    SITE_NAME: str = "politecnicomilano"
    HOME_HOST: str = "politecnicomilano.webex.com"
    LOGIN_URL: str = "https://politecnicomilano.webex.com/mw3300/mywebex/login/login.do?siteurl=politecnicomilano-it&viewFrom=modern"
    IDP_HOST: str = "aunicalogin.polimi.it"
    PIPELINE_BASE_URL: str = "https://nfg1vss.webex.com"
    LISTING_HOSTS: list[str] = ["servizionline.polimi.it", "webeep.polimi.it"]
    LMS_HOSTS: list[str] = ["webeep.polimi.it"]
    LISTING_SHOW_ALL_PATTERN: str = "evn_tutte_registrazioni"
    AUTH_COOKIE_NAME: str = "ticket"
    LISTING_COOKIE_NAME: str = "JSESSIONID"
    CONFIG_FILE: str = "config.json"
    OUTPUT_DIR: str = "videos"
    HEADLESS: bool = True
    DOWNLOAD_ATTEMPTS: int = 5
    FAST_URL_ATTEMPTS: int = 2
    ARIA2C_CONNECTIONS: int = 16
    LOG_LEVEL: str = "INFO"

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        env_prefix="POLIWEBEX_",
        extra="ignore",
    )

    @property
    def home_url(self) -> str:
        return f"https://{self.HOME_HOST}"

    def stream_api_url(self, video_id: str) -> str:
        return f"{self.home_url}/webappng/api/v1/recordings/{video_id}/stream?siteurl={self.SITE_NAME}"

    def probe_url(self) -> str:
        """Lightweight authenticated endpoint answering with a JSON object."""
        return f"{self.home_url}/webappng/api/v1/users/me?siteurl={self.SITE_NAME}"

    def _pipeline_query(self, recording_dir: str, timestamp: str, token: str) -> str:
        return f"recordingDir={recording_dir}&timestamp={timestamp}&token={token}"

    def manifest_url(self, recording_dir: str, timestamp: str, token: str) -> str:
        query = self._pipeline_query(recording_dir, timestamp, token)
        return f"{self.PIPELINE_BASE_URL}/apis/html5-pipeline.do?{query}&xmlName=recording.xml"

    def direct_download_url(self, recording_dir: str, timestamp: str, token: str, filename: str) -> str:
        query = self._pipeline_query(recording_dir, timestamp, token)
        return f"{self.PIPELINE_BASE_URL}/apis/download.do?{query}&fileName={filename}"

    def hls_url(self, recording_dir: str, timestamp: str, token: str, filename: str) -> str:
        return (
            f"{self.PIPELINE_BASE_URL}/hls-vod/recordingDir/{recording_dir}"
            f"/timestamp/{timestamp}/token/{token}/fileName/{filename}.m3u8"
        )
