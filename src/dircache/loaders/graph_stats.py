"""Usage statistics loader backed by the Microsoft Graph reports API."""

import logging

from ..errors import AuthenticationError, DirectoryLoaderError
from ..models import StatsResult
from .base import StatsLoader
from .graph_client import GraphClient, error_from_response
from .report_parser import ReportFormatError, parse_usage_report

logger = logging.getLogger(__name__)

USAGE_REPORT_PATH = (
    "/beta/reports/getMicrosoft365CopilotUsageUserDetail(period='{period}')?$format=text/csv"
)

REDIRECT_STATUSES = (301, 302, 303, 307, 308)


class GraphUsageStatsLoader(StatsLoader):
    """
    Fetches the per-user usage report as CSV.

    Graph answers with a redirect to a pre-signed download location, which is
    fetched without the bearer token.
    """

    def __init__(self, client: GraphClient, period: str = "D30"):
        self.client = client
        self.period = period

    @property
    def report_url(self) -> str:
        return USAGE_REPORT_PATH.format(period=self.period)

    async def fetch_usage_stats(self) -> StatsResult:
        result = StatsResult()
        logger.info(f"Fetching usage report for period {self.period}")

        try:
            response = await self.client.get_raw(self.report_url, allow_redirects=False)
            result.status_code = response.status

            if response.status in REDIRECT_STATUSES:
                if not response.location:
                    result.error_message = "Redirect location URL was empty"
                    logger.warning(result.error_message)
                    return result
                response = await self.client.get_raw(response.location, authorized=False)
                result.status_code = response.status
                if response.status != 200:
                    result.error_message = (
                        f"Failed to download report: {response.status} - {response.reason}"
                    )
                    logger.warning(result.error_message)
                    return result
            elif response.status != 200:
                error = error_from_response(response.status, response.text, response.reason)
                if isinstance(error, AuthenticationError):
                    raise error
                result.error_message = f"Usage report API returned {response.status} - {response.reason}"
                logger.warning(result.error_message)
                return result

            result.records = parse_usage_report(response.text)
            result.success = True
            logger.info(f"Retrieved usage stats for {len(result.records)} users")

        except AuthenticationError:
            raise
        except (DirectoryLoaderError, ReportFormatError) as e:
            result.error_message = f"Error fetching usage stats: {e}"
            logger.error(result.error_message)
        except Exception as e:
            result.error_message = f"Unexpected error fetching usage stats: {e!r}"
            logger.error(result.error_message)

        return result

    async def aclose(self) -> None:
        await self.client.aclose()
