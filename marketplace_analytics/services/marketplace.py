# marketplace_analytics/services/marketplace.py
import logging
from typing import Any, Dict, List, Optional, Protocol

import httpx
from pydantic import ValidationError

from marketplace_analytics.core.config import settings
from marketplace_analytics.models.listing import Category, Listing

logger = logging.getLogger(__name__)


class MarketplaceServiceError(Exception):
    """Базовый класс для ошибок каталога объявлений."""
    def __init__(self, message="Ошибка при взаимодействии с API маркетплейса", status_code=None, details=None):
        self.message = message
        self.status_code = status_code
        self.details = details
        super().__init__(self.message)


class ListingDirectory(Protocol):
    """Что аналитике нужно от каталога объявлений и категорий."""

    async def get_listing(self, listing_id: str) -> Optional[Listing]:
        ...

    async def get_category(self, category_id: str) -> Optional[Category]:
        ...

    async def get_active_listings_by_category(
        self, category_id: str, exclude_listing_id: Optional[str] = None
    ) -> List[Listing]:
        ...

    async def get_listings_by_owner(self, user_id: str, active_only: bool = False) -> List[Listing]:
        ...


class MarketplaceService:
    """
    Асинхронный клиент REST API маркетплейса (объявления и категории).
    """
    def __init__(
        self,
        base_url: str = settings.MARKETPLACE_API_BASE,
        api_key: Optional[str] = settings.MARKETPLACE_API_KEY,
        client: Optional[httpx.AsyncClient] = None,
    ):
        self.base_url = base_url.rstrip('/')
        headers = {"Authorization": f"Bearer {api_key}"} if api_key else {}
        timeouts = httpx.Timeout(10.0, read=20.0, write=10.0, connect=5.0)
        self._client = client or httpx.AsyncClient(base_url=self.base_url, headers=headers, timeout=timeouts)
        logger.info(f"MarketplaceService initialized for URL: {self.base_url}")

    async def close_client(self):
        """Закрывает httpx клиент."""
        if self._client:
            await self._client.aclose()
            logger.info("Marketplace HTTP client closed.")

    async def _request(self, method: str, endpoint: str, params: Optional[Dict] = None) -> Any:
        """
        Внутренний метод для выполнения запросов к API с обработкой ошибок.
        Возвращает разобранный JSON или вызывает MarketplaceServiceError.
        """
        params = {k: v for k, v in (params or {}).items() if v is not None}
        logger.debug(f"Requesting {method} {endpoint} | Params: {params}")
        try:
            response = await self._client.request(method, endpoint, params=params)
            response.raise_for_status()
            try:
                return response.json()
            except ValueError as json_err:
                logger.error(f"Failed to decode JSON response for {method} {endpoint}. Status: {response.status_code}. Response text: {response.text[:500]}...")
                raise MarketplaceServiceError("Ошибка декодирования JSON ответа от API маркетплейса", status_code=response.status_code, details=response.text) from json_err

        except httpx.HTTPStatusError as e:
            error_status_code = e.response.status_code
            error_message = f"HTTP ошибка {error_status_code} от API маркетплейса"
            details: Any = e.response.text
            try:
                api_error = e.response.json()
                if isinstance(api_error, dict):
                    error_message = api_error.get("message", error_message)
                details = api_error
            except ValueError:
                pass
            logger.error(f"Marketplace API error: {error_status_code} - {error_message} for {e.request.url}")
            raise MarketplaceServiceError(error_message, status_code=error_status_code, details=details) from e
        except httpx.TimeoutException as e:
            logger.error(f"Request timeout: {e} for {endpoint}")
            raise MarketplaceServiceError("Превышен таймаут запроса к API маркетплейса") from e
        except httpx.RequestError as e:
            logger.error(f"Network error: {e} for {endpoint}")
            raise MarketplaceServiceError("Ошибка сети при подключении к API маркетплейса") from e

    @staticmethod
    def _unwrap_list(data: Any) -> List[Dict]:
        # API отдает либо список, либо пагинированный объект {"data": [...]}
        if isinstance(data, dict):
            data = data.get("data")
        if isinstance(data, list):
            return [item for item in data if isinstance(item, dict)]
        logger.error(f"Unexpected data type received for listing collection: {type(data)}")
        return []

    @staticmethod
    def _parse_listings(items: List[Dict]) -> List[Listing]:
        listings = []
        for item in items:
            try:
                listings.append(Listing.model_validate(item))
            except ValidationError as e:
                logger.warning(f"Skipping malformed listing payload (id={item.get('id')}): {e.error_count()} errors")
        return listings

    async def get_listing(self, listing_id: str) -> Optional[Listing]:
        logger.info(f"Fetching listing with ID: {listing_id}")
        try:
            data = await self._request("GET", f"listings/{listing_id}")
        except MarketplaceServiceError as e:
            if e.status_code == 404:
                return None
            raise
        if isinstance(data, dict) and isinstance(data.get("data"), dict):
            data = data["data"]
        if not isinstance(data, dict):
            logger.error(f"Unexpected data type received for listing {listing_id}: {type(data)}")
            return None
        try:
            return Listing.model_validate(data)
        except ValidationError as e:
            raise MarketplaceServiceError(f"Некорректные данные объявления {listing_id}", details=e.errors()) from e

    async def get_category(self, category_id: str) -> Optional[Category]:
        logger.info(f"Fetching category with ID: {category_id}")
        try:
            data = await self._request("GET", f"categories/{category_id}")
        except MarketplaceServiceError as e:
            if e.status_code == 404:
                return None
            raise
        if isinstance(data, dict) and isinstance(data.get("data"), dict):
            data = data["data"]
        if not isinstance(data, dict):
            logger.error(f"Unexpected data type received for category {category_id}: {type(data)}")
            return None
        try:
            return Category.model_validate(data)
        except ValidationError as e:
            raise MarketplaceServiceError(f"Некорректные данные категории {category_id}", details=e.errors()) from e

    async def get_active_listings_by_category(
        self, category_id: str, exclude_listing_id: Optional[str] = None
    ) -> List[Listing]:
        params = {"category_id": category_id, "status": "active", "exclude": exclude_listing_id}
        logger.info(f"Fetching active listings with params: {params}")
        data = await self._request("GET", "listings", params=params)
        listings = self._parse_listings(self._unwrap_list(data))
        # Фильтруем повторно на случай, если API проигнорировал параметры
        return [
            listing for listing in listings
            if listing.is_active and listing.category_id == str(category_id) and listing.id != exclude_listing_id
        ]

    async def get_listings_by_owner(self, user_id: str, active_only: bool = False) -> List[Listing]:
        params = {"user_id": user_id, "status": "active" if active_only else None}
        logger.info(f"Fetching listings with params: {params}")
        data = await self._request("GET", "listings", params=params)
        listings = self._parse_listings(self._unwrap_list(data))
        return [
            listing for listing in listings
            if listing.user_id == str(user_id) and (listing.is_active or not active_only)
        ]
