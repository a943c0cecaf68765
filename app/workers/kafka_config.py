from aiokafka.admin import AIOKafkaAdminClient, NewTopic
from aiokafka.errors import TopicAlreadyExistsError, KafkaError
from tenacity import retry, stop_after_attempt, wait_exponential, retry_if_exception_type

from app.utils.logger import get_logger

logger = get_logger("workers.kafka")


def dlq_topic_for(topic: str) -> str:
    return f"{topic}.dlq"


class KafkaTopicManager:
    """Creates the indexing topic and its dead letter topic"""

    def __init__(self, bootstrap_servers: str, topic: str):
        self.bootstrap_servers = bootstrap_servers
        self.topic = topic

    def topics(self):
        return [
            NewTopic(
                name=self.topic,
                num_partitions=10,
                replication_factor=1,
                topic_configs={
                    "retention.ms": "604800000",  # 7 days
                    "cleanup.policy": "delete"
                }
            ),
            NewTopic(
                name=dlq_topic_for(self.topic),
                num_partitions=3,
                replication_factor=1,
                topic_configs={
                    "retention.ms": "2592000000",  # 30 days
                    "cleanup.policy": "delete"
                }
            ),
        ]

    @retry(
        stop=stop_after_attempt(3),
        wait=wait_exponential(multiplier=1, min=2, max=10),
        retry=retry_if_exception_type((KafkaError, ConnectionError)),
        reraise=True,
    )
    async def ensure_topics(self) -> None:
        admin = AIOKafkaAdminClient(bootstrap_servers=self.bootstrap_servers)
        try:
            await admin.start()
            for topic in self.topics():
                try:
                    await admin.create_topics([topic])
                    logger.info(f"Created Kafka topic: {topic.name}")
                except TopicAlreadyExistsError:
                    logger.debug(f"Kafka topic already exists: {topic.name}")
        except Exception as e:
            logger.error(f"Error creating Kafka topics: {e}")
            raise
        finally:
            await admin.close()
