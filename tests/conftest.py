"""Pytest configuration shared across the suite."""

import base64
import json
import time
from pathlib import Path
from typing import Callable, Dict, List, Optional

import httpx
import pytest
import pytest_asyncio

from lighthouse.config import Settings
from lighthouse.database import Database
from lighthouse.eloverblik_client import EloverblikClient

ELOVERBLIK_URL = "https://eloverblik.test/customerapi"
METERING_POINT_ID = "571313000000000001"

PRICES_RESPONSE = [
    {
        "PriceDate": "2024-01-01T00:00:00Z",
        "Sector": "DK1",
        "Currency": "DKK",
        "DisplayPrices": [
            {"Time": "0", "Value": 100.5},
            {"Time": "1", "Value": 95.0},
        ],
    }
]

METERING_POINTS_RESPONSE = {
    "result": [
        {
            "streetCode": "0042",
            "streetName": "Havnegade",
            "buildingNumber": "12",
            "floorId": 1,
            "roomId": "tv",
            "citySubDivisionName": None,
            "municipalityCode": "751",
            "locationDescription": "",
            "settlementMethod": "D01",
            "meterReadingOccurrence": "PT1H",
            "firstConsumerPartyName": "Jens Jensen",
            "secondConsumerPartyName": None,
            "meterNumber": "12345678",
            "consumerStartDate": "2020-05-01T00:00:00Z",
            "meteringPointId": METERING_POINT_ID,
            "typeOfMP": "E17",
            "balanceSupplierName": "Norlys",
            "postcode": "8000",
            "cityName": "Aarhus C",
            "hasRelation": True,
            "consumerCVR": "",
            "dataAccessCVR": "",
            "childMeteringPoints": [],
        }
    ]
}


def timeseries_response(metering_point_id: str = METERING_POINT_ID) -> dict:
    return {
        "result": [
            {
                "MyEnergyData_MarketDocument": {
                    "mRID": "c9b1a2f0",
                    "createdDateTime": "2024-01-02T06:00:00Z",
                    "period.timeInterval": {
                        "start": "2024-01-01T00:00:00Z",
                        "end": "2024-01-02T00:00:00Z",
                    },
                    "TimeSeries": [
                        {
                            "mRID": metering_point_id,
                            "businessType": "A04",
                            "curveType": "A01",
                            "measurement_Unit.name": "KWH",
                            "MarketEvaluationPoint": {
                                "mRID": {"codingScheme": "A10", "name": metering_point_id}
                            },
                            "Period": [
                                {
                                    "resolution": "PT1H",
                                    "timeInterval": {
                                        "start": "2024-01-01T00:00:00Z",
                                        "end": "2024-01-02T00:00:00Z",
                                    },
                                    "Point": [
                                        {
                                            "position": "3",
                                            "out_Quantity.quantity": "1.23",
                                            "out_Quantity.quality": "A04",
                                        }
                                    ],
                                }
                            ],
                        }
                    ],
                },
                "success": True,
                "errorCode": 10000,
                "errorText": "NoError",
                "id": metering_point_id,
                "stackTrace": None,
            }
        ]
    }


def _b64(data: dict) -> str:
    return base64.urlsafe_b64encode(json.dumps(data).encode()).rstrip(b"=").decode()


@pytest.fixture
def make_jwt() -> Callable[..., str]:
    """Build an unsigned JWT whose exp is ``expires_in`` seconds from now."""

    def factory(expires_in: Optional[float] = 3600, claims: Optional[dict] = None) -> str:
        payload = dict(claims or {})
        if expires_in is not None:
            payload["exp"] = int(time.time() + expires_in)
        return f"{_b64({'alg': 'HS256', 'typ': 'JWT'})}.{_b64(payload)}.c2lnbmF0dXJl"

    return factory


class FakeEloverblik:
    """In-memory Eloverblik API answering through httpx.MockTransport."""

    def __init__(self, make_jwt: Callable[..., str]):
        self.make_jwt = make_jwt
        self.requests: List[httpx.Request] = []
        self.token_statuses: List[int] = []
        self.metering_point_statuses: List[int] = []
        self.timeseries_statuses: List[int] = []
        self.metering_points = METERING_POINTS_RESPONSE
        self.issued_tokens: List[str] = []

    def calls(self, path_fragment: str) -> List[httpx.Request]:
        return [r for r in self.requests if path_fragment in r.url.path]

    @staticmethod
    def _next_status(statuses: List[int]) -> int:
        return statuses.pop(0) if statuses else 200

    def handler(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        path = request.url.path

        if path.endswith("/api/token"):
            status = self._next_status(self.token_statuses)
            if status != 200:
                return httpx.Response(status)
            token = self.make_jwt(expires_in=24 * 3600, claims={"n": len(self.issued_tokens)})
            self.issued_tokens.append(token)
            return httpx.Response(200, json={"result": token})

        if path.endswith("/api/meteringpoints/meteringpoints"):
            status = self._next_status(self.metering_point_statuses)
            if status != 200:
                return httpx.Response(status)
            return httpx.Response(200, json=self.metering_points)

        if "/api/meterdata/gettimeseries/" in path:
            status = self._next_status(self.timeseries_statuses)
            if status != 200:
                return httpx.Response(status)
            body = json.loads(request.content)
            metering_point_id = body["meteringPoints"]["meteringPoint"][0]
            return httpx.Response(200, json=timeseries_response(metering_point_id))

        return httpx.Response(404)


@pytest.fixture
def fake_eloverblik(make_jwt) -> FakeEloverblik:
    return FakeEloverblik(make_jwt)


@pytest.fixture
def token_path(tmp_path) -> Path:
    return tmp_path / ".requestToken"


@pytest_asyncio.fixture
async def eloverblik_client(fake_eloverblik, token_path):
    client = EloverblikClient(
        base_url=ELOVERBLIK_URL,
        token_path=token_path,
        transport=httpx.MockTransport(fake_eloverblik.handler),
    )
    yield client
    await client.close()


@pytest.fixture
def database(tmp_path):
    db = Database(f"sqlite:///{tmp_path / 'lighthouse.db'}")
    db.connect()
    yield db
    db.close()


@pytest.fixture
def make_settings(tmp_path) -> Callable[..., Settings]:
    def factory(**sections: Dict) -> Settings:
        data = {
            "Database": {"Driver": "sqlite", "Name": str(tmp_path / "lighthouse.db")},
            "NorlysAPI": {"URL": "https://norlys.test/prices"},
            "ElOverblik": {
                "FetchDataFromElOverblik": True,
                "LighthouseToken": "unused",
                "URL": ELOVERBLIK_URL,
                "RequestTokenFile": str(tmp_path / ".requestToken"),
            },
        }
        for key, value in sections.items():
            if isinstance(value, dict):
                data.setdefault(key, {}).update(value)
            else:
                data[key] = value
        return Settings(**data)

    return factory
