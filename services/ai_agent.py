"""
Sophia AI agent.

Builds prompts for market research, business planning and performance
decisions. By default the model call returns a fixed mock payload and every
answer is the canned (or randomly jittered) structure below; with
AI_LIVE_CALLS enabled the prompt is sent to OpenAI and any recognised keys in
its JSON reply override the canned values. Without an API key every method
returns its fallback structure.
"""

import json
import logging
import random
import time
from datetime import datetime, timedelta
from typing import Optional, Dict, Any, List, Callable

from openai import OpenAI

from services.config import OPENAI_API_KEY, OPENAI_BASE_URL, OPENAI_MODEL, AI_LIVE_CALLS
from services.errors import MissingAPIKeyError

logger = logging.getLogger(__name__)

MOCK_LLM_RESPONSE = {
    "analysis": "AI-generated analysis based on prompt",
    "confidence": 0.85,
    "reasoning": "Based on market research and industry trends",
}

SYSTEM_PROMPT = (
    "You are Sophia, an autonomous SaaS business strategist. "
    "Always respond in STRICT JSON. No extra commentary, just JSON."
)


def parse_llm_json(raw: str) -> Dict[str, Any]:
    """Parse a JSON object out of a model reply, tolerating ``` fences. Returns {} on failure."""
    if not raw:
        return {}
    if "```json" in raw:
        start = raw.find("```json") + 7
        end = raw.find("```", start)
        if end > start:
            raw = raw[start:end].strip()
    elif "```" in raw:
        start = raw.find("```") + 3
        end = raw.find("```", start)
        if end > start:
            raw = raw[start:end].strip()
    try:
        data = json.loads(raw)
    except (json.JSONDecodeError, TypeError):
        return {}
    return data if isinstance(data, dict) else {}


def _overlay(canned: Dict[str, Any], raw: str) -> Dict[str, Any]:
    parsed = parse_llm_json(raw)
    if parsed == MOCK_LLM_RESPONSE:
        return canned
    for key in canned:
        if key in parsed and parsed[key] is not None:
            canned[key] = parsed[key]
    return canned


def _section(data: Dict[str, Any], key: str) -> Dict[str, Any]:
    value = data.get(key)
    return value if isinstance(value, dict) else {}


def _names(value: Any) -> List[str]:
    return [str(item) for item in value] if isinstance(value, list) else []


def _in_days(days: int) -> str:
    return (datetime.utcnow() + timedelta(days=days)).isoformat()


class SophiaAIAgent:
    """Business intelligence and decision helper."""

    def __init__(self, api_key: Optional[str] = OPENAI_API_KEY, live_calls: bool = AI_LIVE_CALLS):
        self.api_key = api_key
        self.live_calls = live_calls

    def analyze_market_opportunity(self, industry: str) -> Dict[str, Any]:
        prompt = (
            f"Analyze the market opportunity for {industry} industry. "
            "Consider market size, competition, growth rate, barriers, and opportunities. "
            "Provide a comprehensive analysis with specific data points."
        )
        return self._ask(
            prompt,
            lambda raw: self._parse_market_analysis(raw, industry),
            lambda: self._fallback_market_analysis(industry),
        )

    def generate_business_plan(self, idea: Dict[str, Any]) -> Dict[str, Any]:
        prompt = (
            f"Create a detailed business plan for: \"{idea.get('title')}\"\n"
            f"Description: {idea.get('description')}\n"
            f"Industry: {idea.get('industry')}\n"
            f"Target Market: {idea.get('targetMarket')}\n\n"
            "Include technical specifications, marketing strategy, and financial projections "
            "for a SaaS subscription-based business model."
        )
        return self._ask(
            prompt,
            lambda raw: self._parse_business_plan(raw, idea),
            lambda: self._fallback_business_plan(idea),
        )

    def orchestrate_development(self, business_plan: Dict[str, Any]) -> Dict[str, Any]:
        specs = _section(business_plan, "technicalSpecs")
        prompt = (
            f"Create a development plan for a {_section(business_plan, 'idea').get('industry')} SaaS application.\n"
            f"Features needed: {', '.join(_names(specs.get('features')))}\n"
            f"Technologies: {', '.join(_names(specs.get('technologies')))}\n\n"
            "Break down into phases with tasks, dependencies, and timelines."
        )
        return self._ask(
            prompt,
            self._parse_development_plan,
            lambda: self._fallback_development_plan(business_plan),
        )

    def monitor_development_progress(self, project_id: str) -> Dict[str, Any]:
        """Simulated progress report; there is no build system behind it yet."""
        has_issues = random.random() > 0.8
        progress = {
            "projectId": project_id,
            "phase": "Implementation",
            "progress": random.random() * 100,
            "tasksCompleted": random.randint(0, 19),
            "totalTasks": 25,
            "currentTask": "Implementing authentication system",
            "isComplete": False,
            "hasIssues": has_issues,
            "estimatedCompletion": _in_days(7),
        }
        if has_issues:
            progress["issues"] = ["TypeScript compilation errors", "Test coverage below 80%"]
        return progress

    def evaluate_business_performance(self, business_id: str, metrics: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
        prompt = (
            "Analyze business performance and recommend action:\n"
            f"Business ID: {business_id}\n"
            f"Metrics: {json.dumps(metrics or {}, default=str)}\n\n"
            "Consider revenue, growth, market conditions, and efficiency.\n"
            "Recommend one of: SCALE, PAUSE, OPTIMIZE, CLOSE, MAINTAIN"
        )
        return self._ask(prompt, self._parse_business_decision, self._fallback_decision)

    def recommend_actions(self, business_metrics: Dict[str, Any]) -> List[Dict[str, Any]]:
        prompt = (
            "Based on these business metrics, recommend specific actions:\n"
            f"{json.dumps(business_metrics, default=str)}\n\n"
            "Provide actionable recommendations with priorities, timeframes, and expected impact."
        )
        return self._ask(prompt, self._parse_action_plans, self._fallback_actions)

    def generate_business_idea(self, industry: Optional[str] = None) -> Dict[str, Any]:
        focus = f" for {industry} industry" if industry else ""
        prompt = (
            f"Generate an innovative SaaS business idea{focus}. "
            "Focus on subscription-based model, solving real problems, and market opportunity. "
            "Include target market, business model, and competition analysis."
        )
        return self._ask(
            prompt,
            lambda raw: self._parse_business_idea(raw, industry),
            lambda: self._fallback_business_idea(industry),
        )

    def _ask(self, prompt: str, parse: Callable[[str], Any], fallback: Callable[[], Any]) -> Any:
        try:
            return parse(self._call_llm(prompt))
        except MissingAPIKeyError:
            logger.info("AI API key not configured, using fallback response")
            return fallback()
        except Exception as e:
            logger.error("AI request failed, using fallback response: %s", e)
            return fallback()

    def _call_llm(self, prompt: str) -> str:
        if not self.api_key:
            raise MissingAPIKeyError("AI API key not configured")

        logger.debug("AI prompt: %s", prompt)
        if not self.live_calls:
            return json.dumps(MOCK_LLM_RESPONSE)

        client = OpenAI(api_key=self.api_key, base_url=OPENAI_BASE_URL)
        response = client.chat.completions.create(
            model=OPENAI_MODEL,
            messages=[
                {"role": "system", "content": SYSTEM_PROMPT},
                {"role": "user", "content": prompt},
            ],
            temperature=0.4,
        )
        return response.choices[0].message.content or ""

    def _parse_market_analysis(self, raw: str, industry: str) -> Dict[str, Any]:
        return _overlay({
            "industry": industry,
            "marketSize": random.randint(0, 9_999_999),
            "competitorCount": random.randint(0, 99),
            "growthRate": random.random() * 0.3,
            "barriers": ["High competition", "Regulatory compliance"],
            "opportunities": ["Emerging markets", "Technology advancement"],
            "threats": ["Economic downturn", "New regulations"],
            "recommendation": "MEDIUM",
            "confidence": 0.85,
        }, raw)

    def _parse_business_plan(self, raw: str, idea: Dict[str, Any]) -> Dict[str, Any]:
        revenue = idea.get("estimatedRevenue", 0) or 0
        return _overlay({
            "idea": idea,
            "technicalSpecs": {
                "technologies": ["React", "Node.js", "PostgreSQL", "TypeScript"],
                "features": ["User authentication", "Dashboard", "Analytics", "Payments"],
                "architecture": "Microservices with API Gateway",
            },
            "marketingStrategy": {
                "targetAudience": idea.get("targetMarket"),
                "channels": ["Google Ads", "Content Marketing", "Social Media"],
                "budget": 5000,
            },
            "financialProjections": {
                "monthlyRevenue": revenue,
                "costs": revenue * 0.4,
                "profitMargin": 0.6,
            },
        }, raw)

    def _parse_development_plan(self, raw: str) -> Dict[str, Any]:
        return _overlay({
            "projectId": f"proj_{int(time.time() * 1000)}",
            "phases": [
                {
                    "name": "Setup & Foundation",
                    "duration": 3,
                    "tasks": ["Project setup", "Database schema", "Authentication"],
                    "dependencies": [],
                },
                {
                    "name": "Core Features",
                    "duration": 7,
                    "tasks": ["User dashboard", "Core functionality", "API development"],
                    "dependencies": ["Setup & Foundation"],
                },
                {
                    "name": "Integration & Testing",
                    "duration": 5,
                    "tasks": ["Third-party integrations", "Testing", "Deployment"],
                    "dependencies": ["Core Features"],
                },
            ],
            "technologies": ["React", "Node.js", "PostgreSQL", "TypeScript"],
            "estimatedCompletion": _in_days(15),
        }, raw)

    def _parse_business_decision(self, raw: str) -> Dict[str, Any]:
        return _overlay({
            "action": "OPTIMIZE",
            "confidence": 0.8,
            "reasoning": "Business showing steady growth but with optimization opportunities",
            "metrics": {
                "revenue": random.random() * 10000,
                "growth": random.random() * 0.2,
                "efficiency": random.random() * 0.9,
                "market": random.random() * 0.7,
            },
            "recommendations": [
                {
                    "type": "MARKETING",
                    "priority": "HIGH",
                    "action": "Increase ad spend on high-performing campaigns",
                    "expectedImpact": "20% increase in conversions",
                    "timeframe": "2 weeks",
                    "resources": ["Marketing budget", "Campaign manager"],
                }
            ],
        }, raw)

    def _parse_action_plans(self, raw: str) -> List[Dict[str, Any]]:
        parsed = parse_llm_json(raw)
        if isinstance(parsed.get("actions"), list) and parsed["actions"]:
            return parsed["actions"]
        return [
            {
                "type": "MARKETING",
                "priority": "HIGH",
                "action": "Optimize Google Ads campaigns",
                "expectedImpact": "Increase CTR by 15%",
                "timeframe": "1 week",
                "resources": ["Marketing team", "Ad budget"],
            },
            {
                "type": "DEVELOPMENT",
                "priority": "MEDIUM",
                "action": "Improve page load speed",
                "expectedImpact": "Reduce bounce rate by 10%",
                "timeframe": "2 weeks",
                "resources": ["Development team", "Performance tools"],
            },
        ]

    def _parse_business_idea(self, raw: str, industry: Optional[str]) -> Dict[str, Any]:
        return _overlay({
            "title": "AI-Powered Task Management",
            "description": "SaaS platform that uses AI to optimize team productivity and task allocation",
            "industry": industry or "Productivity Software",
            "targetMarket": "Small to medium businesses",
            "businessModel": "Monthly subscription ($29-99/month)",
            "estimatedRevenue": 5000,
            "competitionAnalysis": ["Asana", "Monday.com", "Trello"],
            "marketOpportunity": "Growing demand for AI-enhanced productivity tools",
        }, raw)

    def _fallback_market_analysis(self, industry: str) -> Dict[str, Any]:
        return {
            "industry": industry,
            "marketSize": 1000000,
            "competitorCount": 50,
            "growthRate": 0.1,
            "barriers": ["Competition", "Market saturation"],
            "opportunities": ["Digital transformation", "Remote work trends"],
            "threats": ["Economic uncertainty"],
            "recommendation": "MEDIUM",
            "confidence": 0.6,
        }

    def _fallback_business_plan(self, idea: Dict[str, Any]) -> Dict[str, Any]:
        revenue = idea.get("estimatedRevenue", 0) or 0
        return {
            "idea": idea,
            "technicalSpecs": {
                "technologies": ["React", "Node.js", "PostgreSQL"],
                "features": ["User management", "Dashboard", "Payments"],
                "architecture": "Standard web application",
            },
            "marketingStrategy": {
                "targetAudience": idea.get("targetMarket"),
                "channels": ["Google Ads", "Social Media"],
                "budget": 2000,
            },
            "financialProjections": {
                "monthlyRevenue": revenue,
                "costs": revenue * 0.5,
                "profitMargin": 0.5,
            },
        }

    def _fallback_development_plan(self, business_plan: Dict[str, Any]) -> Dict[str, Any]:
        return {
            "projectId": f"fallback_{int(time.time() * 1000)}",
            "phases": [
                {
                    "name": "Basic Setup",
                    "duration": 5,
                    "tasks": ["Initial setup", "Basic features"],
                    "dependencies": [],
                }
            ],
            "technologies": _names(_section(business_plan, "technicalSpecs").get("technologies")),
            "estimatedCompletion": _in_days(10),
        }

    def _fallback_decision(self) -> Dict[str, Any]:
        return {
            "action": "MAINTAIN",
            "confidence": 0.5,
            "reasoning": "Unable to analyze - maintaining current status",
            "metrics": {"revenue": 0, "growth": 0, "efficiency": 0.5, "market": 0.5},
            "recommendations": [],
        }

    def _fallback_actions(self) -> List[Dict[str, Any]]:
        return [
            {
                "type": "BUSINESS",
                "priority": "MEDIUM",
                "action": "Review business metrics",
                "expectedImpact": "Better understanding of performance",
                "timeframe": "1 week",
                "resources": ["Analytics team"],
            }
        ]

    def _fallback_business_idea(self, industry: Optional[str]) -> Dict[str, Any]:
        return {
            "title": "Generic SaaS Solution",
            "description": "A flexible SaaS platform for business automation",
            "industry": industry or "Software",
            "targetMarket": "Small businesses",
            "businessModel": "Subscription",
            "estimatedRevenue": 1000,
            "competitionAnalysis": ["Various competitors"],
            "marketOpportunity": "General market demand",
        }
