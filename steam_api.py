from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Dict, List, Optional

import httpx

from errors import MalformedUpstreamRecord, UpstreamUnavailable


STEAM_API_BASE = "https://api.steampowered.com"


@dataclass
class OwnedGame:
    appid: int
    name: Optional[str]
    playtime_forever: int

    @property
    def title_id(self) -> str:
        return str(self.appid)


def parse_owned_game(raw: Any) -> OwnedGame:
    if not isinstance(raw, dict):
        raise MalformedUpstreamRecord(f"游戏条目不是对象: {raw!r}")
    appid = raw.get("appid")
    if appid is None:
        raise MalformedUpstreamRecord(f"游戏条目缺少 appid: {raw!r}")
    try:
        playtime_forever = int(raw.get("playtime_forever", 0))
        appid = int(appid)
    except (TypeError, ValueError) as exc:
        raise MalformedUpstreamRecord(f"appid {appid} 的字段无法解析: {exc}") from exc
    if playtime_forever < 0:
        raise MalformedUpstreamRecord(f"appid {appid} 的 playtime_forever 为负数: {playtime_forever}")
    name = raw.get("name")
    return OwnedGame(
        appid=appid,
        name=str(name) if isinstance(name, str) else None,
        playtime_forever=playtime_forever,
    )


class SteamApiClient:
    def __init__(self, api_key: str, client: Optional[httpx.Client] = None) -> None:
        self._api_key = api_key
        self._client = client or httpx.Client(timeout=20.0)

    def _get_json(self, url: str, params: Dict[str, Any]) -> Dict[str, Any]:
        try:
            resp = self._client.get(url, params=params)
            resp.raise_for_status()
            return resp.json()
        except httpx.HTTPError as exc:
            raise UpstreamUnavailable(f"Steam API 请求失败: {exc}") from exc
        except ValueError as exc:
            raise UpstreamUnavailable(f"Steam API 返回了无法解析的 JSON: {exc}") from exc

    def resolve_vanity_url(self, vanity_url: str) -> Optional[str]:
        params = {
            "key": self._api_key,
            "vanityurl": vanity_url,
            "format": "json",
        }
        url = f"{STEAM_API_BASE}/ISteamUser/ResolveVanityURL/v1/"
        data = self._get_json(url, params)
        response = data.get("response", {})
        if response.get("success") != 1:
            return None
        steamid = response.get("steamid")
        return str(steamid) if steamid is not None else None

    def get_owned_games_raw(self, steamid: str) -> List[Any]:
        params = {
            "key": self._api_key,
            "steamid": steamid,
            "include_appinfo": 1,
            "include_played_free_games": 1,
            "format": "json",
        }
        url = f"{STEAM_API_BASE}/IPlayerService/GetOwnedGames/v1/"
        data = self._get_json(url, params)
        response = data.get("response")
        if not isinstance(response, dict) or "games" not in response:
            raise UpstreamUnavailable("Steam API 响应中没有游戏数据（资料可能为私密）")
        return list(response.get("games") or [])

    def close(self) -> None:
        self._client.close()
