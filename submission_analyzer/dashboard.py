"""Instructor dashboards.

Static, self-contained HTML files written under ``<data>/dashboard/``:

  <course>-dashboard.html              course overview (three tabs)
  <course>-<key>-discussion.html       AI-discussion grading review

Student text is entity-escaped where it lands in markup and passed
through script_json() where it lands in a script block.
"""

import logging
from datetime import datetime

from submission_analyzer.html_safety import escape_html as esc
from submission_analyzer.html_safety import script_json
from submission_analyzer.identity import IdentityMap
from submission_analyzer.storage import load_json, save_text

logger = logging.getLogger(__name__)

LIGHT_COLORS = {"#2563eb": "#dbeafe", "#0d9488": "#ccfbf1"}


def _timestamp() -> str:
    return datetime.now().strftime("%Y-%m-%d %H:%M")


def _avg(values) -> float:
    values = [v for v in values if v is not None]
    if not values:
        return 0
    return round(sum(values) / len(values), 1)


def _sort_number(value) -> int:
    try:
        return int(value)
    except (TypeError, ValueError):
        return 0


# ── Course overview ──────────────────────────────────────────────────────────

def build_overview_data(course, analysis: dict, identity: IdentityMap) -> dict:
    """Profiles sorted by display name and assignments by (sprint, week)."""
    assignments = []
    for key, a in (analysis.get("assignments") or {}).items():
        assignments.append({
            "key":     key,
            "title":   a.get("title") or key,
            "type":    a.get("type"),
            "points":  a.get("points"),
            "sprint":  a.get("sprint"),
            "week":    a.get("week"),
            "dueDate": a.get("dueDate"),
        })
    assignments.sort(key=lambda a: (_sort_number(a["sprint"]), _sort_number(a["week"])))

    summaries = analysis.get("studentSummaries") or {}
    profiles = []
    for anon_id in identity.sorted_by_name():
        per_assignment = {}
        for a in assignments:
            sd = analysis["assignments"][a["key"]].get("students", {}).get(anon_id)
            if sd:
                per_assignment[a["key"]] = {
                    "participation": sd.get("participation"),
                    "quality":       sd.get("quality"),
                    "qualityNotes":  sd.get("qualityNotes") or "",
                    "contentType":   sd.get("contentType"),
                }
        entries = per_assignment.values()
        profiles.append({
            "id":               anon_id,
            "name":             identity.name(anon_id),
            "assignments":      per_assignment,
            "avgParticipation": _avg(e["participation"] for e in entries),
            "avgQuality":       _avg(e["quality"] for e in entries),
            "summary":          summaries.get(anon_id, ""),
        })

    return {
        "course":      course.name,
        "semester":    course.semester,
        "lastUpdated": analysis.get("lastUpdated"),
        "assignments": assignments,
        "profiles":    profiles,
    }


_OVERVIEW_CSS = """
* { box-sizing: border-box; margin: 0; padding: 0; }
body { font-family: -apple-system, BlinkMacSystemFont, 'Segoe UI', Roboto, sans-serif; background: #f1f5f9; color: #1e293b; line-height: 1.5; }
.header { background: linear-gradient(135deg, #1e293b, #334155); color: white; padding: 24px 32px; border-bottom: 4px solid var(--primary); }
.header h1 { font-size: 24px; font-weight: 700; }
.header p { color: #94a3b8; font-size: 14px; margin-top: 4px; }
.nav { display: flex; gap: 8px; padding: 16px 32px; background: white; border-bottom: 1px solid #e2e8f0; }
.nav button { padding: 8px 16px; border: 1px solid #e2e8f0; border-radius: 6px; background: white; cursor: pointer; font-size: 14px; font-family: inherit; }
.nav button.active { background: #1e293b; color: white; border-color: #1e293b; }
.container { max-width: 1400px; margin: 0 auto; padding: 24px 32px; }
.charts-row { display: grid; grid-template-columns: 1fr 1fr; gap: 24px; margin-bottom: 24px; }
.chart-card, .detail-panel { background: white; border-radius: 12px; padding: 24px; box-shadow: 0 1px 3px rgba(0,0,0,0.08); margin-bottom: 24px; }
.chart-card h3 { font-size: 16px; margin-bottom: 16px; color: #334155; }
.chart-bar-row { display: flex; align-items: center; gap: 8px; margin-bottom: 8px; }
.chart-bar-label { width: 110px; text-align: right; font-size: 13px; color: #64748b; flex-shrink: 0; }
.chart-bar-track { flex: 1; height: 28px; background: #f1f5f9; border-radius: 6px; overflow: hidden; }
.chart-bar-fill { height: 100%; border-radius: 6px; display: flex; align-items: center; padding-left: 8px; font-size: 12px; font-weight: 600; color: white; min-width: 32px; }
.table-card { background: white; border-radius: 12px; box-shadow: 0 1px 3px rgba(0,0,0,0.08); overflow: hidden; margin-bottom: 24px; }
.table-card h3 { padding: 16px 20px; border-bottom: 1px solid #e2e8f0; font-size: 16px; }
table { width: 100%; border-collapse: collapse; font-size: 14px; }
th { background: #f8fafc; text-align: left; padding: 10px 12px; font-weight: 600; color: #475569; border-bottom: 1px solid #e2e8f0; position: sticky; top: 0; }
td { padding: 10px 12px; border-bottom: 1px solid #f1f5f9; }
tr.clickable { cursor: pointer; }
tr.clickable:hover { background: #eff6ff; }
.score { display: inline-flex; align-items: center; justify-content: center; min-width: 28px; height: 28px; padding: 0 4px; border-radius: 6px; font-weight: 700; font-size: 13px; }
.score-1 { background: #fef2f2; color: #dc2626; }
.score-2 { background: #fef3c7; color: #d97706; }
.score-3 { background: #fefce8; color: #ca8a04; }
.score-4 { background: #f0fdf4; color: #16a34a; }
.score-5 { background: #ecfdf5; color: #059669; }
.score-na { background: #f1f5f9; color: #94a3b8; font-size: 11px; }
.subtitle { color: #64748b; font-size: 14px; margin-top: 4px; }
.summary { margin-top: 12px; padding: 12px 16px; background: #f8fafc; border-radius: 8px; border-left: 3px solid var(--primary); font-size: 14px; color: #334155; white-space: pre-wrap; }
.summary-row td { padding: 4px 12px 12px 24px; border-bottom: 2px solid #e2e8f0; background: #f8fafc; font-size: 13px; color: #475569; white-space: pre-wrap; }
.notes-cell { max-width: 320px; font-size: 13px; color: #64748b; white-space: pre-wrap; }
.back-btn { color: #3b82f6; cursor: pointer; font-size: 14px; margin-bottom: 16px; border: none; background: none; font-family: inherit; }
@media (max-width: 768px) { .charts-row { grid-template-columns: 1fr; } .container { padding: 16px; } }
"""

_OVERVIEW_JS = """
var COLORS = {1: '#ef4444', 2: '#f59e0b', 3: '#eab308', 4: '#22c55e', 5: '#10b981'};
var LABELS = {1: 'Very Low', 2: 'Low', 3: 'Adequate', 4: 'Good', 5: 'Excellent'};

function esc(s) {
  return String(s == null ? '' : s)
    .replace(/&/g, '&amp;').replace(/</g, '&lt;').replace(/>/g, '&gt;')
    .replace(/"/g, '&quot;').replace(/'/g, '&#39;').replace(/`/g, '&#96;');
}
function scoreSpan(val) {
  if (val == null || val === 0) return '<span class="score score-na">-</span>';
  var r = Math.min(5, Math.max(1, Math.round(val)));
  return '<span class="score score-' + r + '">' + esc(val) + '</span>';
}
function distribution(values) {
  var counts = {1: 0, 2: 0, 3: 0, 4: 0, 5: 0};
  values.forEach(function(v) { if (v >= 1 && v <= 5) counts[Math.round(v)]++; });
  return counts;
}
function barChart(title, counts, total) {
  var html = '<div class="chart-card"><h3>' + esc(title) + '</h3>';
  for (var i = 5; i >= 1; i--) {
    var pct = total > 0 ? counts[i] / total * 100 : 0;
    html += '<div class="chart-bar-row"><div class="chart-bar-label">' + LABELS[i] + ' (' + i + ')</div>' +
      '<div class="chart-bar-track"><div class="chart-bar-fill" style="width:' + Math.max(pct, 2) +
      '%;background:' + COLORS[i] + '">' + counts[i] + '</div></div></div>';
  }
  return html + '</div>';
}
function setActive(idx) {
  var buttons = document.querySelectorAll('.nav button');
  for (var i = 0; i < buttons.length; i++) buttons[i].classList.toggle('active', i === idx);
}
function showView(view, detail) {
  var el = document.getElementById('content');
  if (view === 'overview') { setActive(0); el.innerHTML = renderOverview(); }
  else if (view === 'assignments') { setActive(1); el.innerHTML = detail ? renderAssignment(detail) : renderAssignments(); }
  else if (view === 'students') { setActive(2); el.innerHTML = detail ? renderStudent(detail) : renderStudents(); }
}
function openStudent(i) { showView('students', PROFILES[i].id); }
function openAssignment(i) { showView('assignments', ASSIGNMENTS[i].key); }

function renderOverview() {
  var parts = PROFILES.map(function(p) { return p.avgParticipation; }).filter(function(v) { return v > 0; });
  var quals = PROFILES.map(function(p) { return p.avgQuality; }).filter(function(v) { return v > 0; });
  var html = '<div class="charts-row">' +
    barChart('Participation Distribution (Avg per Student)', distribution(parts), parts.length) +
    barChart('Quality Distribution (Avg per Student)', distribution(quals), quals.length) + '</div>';
  var cols = 3 + ASSIGNMENTS.length;
  html += '<div class="table-card"><h3>All Students (' + PROFILES.length + ')</h3>' +
    '<div style="max-height:700px;overflow-y:auto"><table><thead><tr><th>Student</th><th>Avg Participation</th><th>Avg Quality</th>';
  ASSIGNMENTS.forEach(function(a) {
    html += '<th title="' + esc(a.title) + '" style="writing-mode:vertical-lr;font-size:11px;padding:8px 4px">' + esc(a.key) + '</th>';
  });
  html += '</tr></thead><tbody>';
  PROFILES.forEach(function(p, i) {
    html += '<tr class="clickable" onclick="openStudent(' + i + ')"><td>' + esc(p.name) + '</td>' +
      '<td>' + scoreSpan(p.avgParticipation) + '</td><td>' + scoreSpan(p.avgQuality) + '</td>';
    ASSIGNMENTS.forEach(function(a) {
      var sa = p.assignments[a.key];
      html += '<td>' + scoreSpan(sa ? (sa.quality != null ? sa.quality : sa.participation) : null) + '</td>';
    });
    html += '</tr>';
    if (p.summary) html += '<tr class="summary-row"><td colspan="' + cols + '">' + esc(p.summary) + '</td></tr>';
  });
  return html + '</tbody></table></div></div>';
}
function renderAssignments() {
  var html = '<div class="table-card"><h3>Assignments (' + ASSIGNMENTS.length + ')</h3><table><thead><tr>' +
    '<th>Assignment</th><th>Sprint</th><th>Week</th><th>Type</th><th>Submissions</th><th>Avg Part.</th><th>Avg Quality</th></tr></thead><tbody>';
  ASSIGNMENTS.forEach(function(a, i) {
    var subs = PROFILES.map(function(p) { return p.assignments[a.key]; }).filter(Boolean);
    html += '<tr class="clickable" onclick="openAssignment(' + i + ')"><td>' + esc(a.title) + '</td>' +
      '<td>S' + esc(a.sprint) + '</td><td>W' + esc(a.week) + '</td><td>' + esc(a.type) + '</td>' +
      '<td>' + subs.length + '/' + PROFILES.length + '</td>' +
      '<td>' + scoreSpan(avg(subs.map(function(s) { return s.participation; }))) + '</td>' +
      '<td>' + scoreSpan(avg(subs.map(function(s) { return s.quality; }))) + '</td></tr>';
  });
  return html + '</tbody></table></div>';
}
function avg(values) {
  values = values.filter(function(v) { return v != null; });
  if (!values.length) return null;
  return Math.round(values.reduce(function(x, y) { return x + y; }, 0) / values.length * 10) / 10;
}
function renderAssignment(key) {
  var a = ASSIGNMENTS.filter(function(x) { return x.key === key; })[0];
  if (!a) return '<p>Assignment not found</p>';
  var rows = [];
  PROFILES.forEach(function(p, i) { if (p.assignments[key]) rows.push([i, p, p.assignments[key]]); });
  var html = '<button class="back-btn" onclick="showView(\\'assignments\\')">&larr; Back to Assignments</button>' +
    '<div class="detail-panel"><h2>' + esc(a.title) + '</h2><div class="subtitle">Sprint ' + esc(a.sprint) +
    ', Week ' + esc(a.week) + ' &middot; ' + esc(a.type) + ' &middot; ' + esc(a.points) + ' pts &middot; Due: ' +
    esc(a.dueDate || 'N/A') + '</div></div>';
  html += '<div class="charts-row">' +
    barChart('Participation', distribution(rows.map(function(r) { return r[2].participation; })), rows.length) +
    barChart('Quality', distribution(rows.map(function(r) { return r[2].quality; }).filter(function(v) { return v != null; })),
             rows.filter(function(r) { return r[2].quality != null; }).length) + '</div>';
  html += '<div class="table-card"><h3>Student Submissions (' + rows.length + ')</h3><table><thead><tr>' +
    '<th>Student</th><th>Participation</th><th>Quality</th><th>Content Type</th><th>Notes</th></tr></thead><tbody>';
  rows.forEach(function(r) {
    html += '<tr class="clickable" onclick="openStudent(' + r[0] + ')"><td>' + esc(r[1].name) + '</td>' +
      '<td>' + scoreSpan(r[2].participation) + '</td><td>' + scoreSpan(r[2].quality) + '</td>' +
      '<td>' + esc(r[2].contentType || '-') + '</td><td class="notes-cell">' + esc(r[2].qualityNotes) + '</td></tr>';
  });
  return html + '</tbody></table></div>';
}
function renderStudents() {
  var html = '<div class="table-card"><h3>Students (' + PROFILES.length + ')</h3><table><thead><tr>' +
    '<th>Student</th><th>ID</th><th>Avg Participation</th><th>Avg Quality</th></tr></thead><tbody>';
  PROFILES.forEach(function(p, i) {
    html += '<tr class="clickable" onclick="openStudent(' + i + ')"><td>' + esc(p.name) + '</td><td>' + esc(p.id) + '</td>' +
      '<td>' + scoreSpan(p.avgParticipation) + '</td><td>' + scoreSpan(p.avgQuality) + '</td></tr>';
  });
  return html + '</tbody></table></div>';
}
function renderStudent(id) {
  var p = PROFILES.filter(function(x) { return x.id === id; })[0];
  if (!p) return '<p>Student not found</p>';
  var html = '<button class="back-btn" onclick="showView(\\'students\\')">&larr; Back to Students</button>' +
    '<div class="detail-panel"><h2>' + esc(p.name) + '</h2><div class="subtitle">ID: ' + esc(p.id) +
    ' &middot; Avg Participation: ' + esc(p.avgParticipation || '-') + ' &middot; Avg Quality: ' + esc(p.avgQuality || '-') + '</div>';
  if (p.summary) html += '<div class="summary">' + esc(p.summary) + '</div>';
  html += '</div><div class="table-card"><h3>Assignment History</h3><table><thead><tr>' +
    '<th>Assignment</th><th>Sprint</th><th>Participation</th><th>Quality</th><th>Content Type</th><th>Notes</th></tr></thead><tbody>';
  ASSIGNMENTS.forEach(function(a, i) {
    var sa = p.assignments[a.key] || {};
    html += '<tr class="clickable" onclick="openAssignment(' + i + ')"><td>' + esc(a.title) + '</td><td>S' + esc(a.sprint) + '</td>' +
      '<td>' + scoreSpan(sa.participation) + '</td><td>' + scoreSpan(sa.quality) + '</td>' +
      '<td>' + esc(sa.contentType || 'none') + '</td><td class="notes-cell">' + esc(sa.qualityNotes || '-') + '</td></tr>';
  });
  return html + '</tbody></table></div>';
}
showView('overview');
"""


def render_course_dashboard(data: dict, color: str = "#2563eb") -> str:
    updated = data.get("lastUpdated") or "Never"
    return f"""<!DOCTYPE html>
<html lang="en">
<head>
<meta charset="UTF-8">
<meta name="viewport" content="width=device-width, initial-scale=1.0">
<title>{esc(data['course'])} Submission Dashboard</title>
<style>:root {{ --primary: {esc(color)}; }}{_OVERVIEW_CSS}</style>
</head>
<body>
<div class="header">
  <h1>{esc(data['course'])} &middot; Submission Dashboard</h1>
  <p>{esc(data.get('semester') or '')} &middot; Last updated: {esc(updated)}</p>
</div>
<div class="nav">
  <button class="active" onclick="showView('overview')">Course Overview</button>
  <button onclick="showView('assignments')">By Assignment</button>
  <button onclick="showView('students')">By Student</button>
</div>
<div class="container" id="content"></div>
<script>
var PROFILES = {script_json(data['profiles'])};
var ASSIGNMENTS = {script_json(data['assignments'])};
{_OVERVIEW_JS}
</script>
</body>
</html>
"""


# ── Discussion grading dashboard ─────────────────────────────────────────────

def discussion_rows(disc: dict, identity: IdentityMap) -> list:
    """One display row per graded student, sorted by display name."""
    results = disc.get("results") or {}
    student_data = disc.get("studentData") or {}
    rows = []
    for anon_id, grade in results.items():
        sd = student_data.get(anon_id) or {}
        rows.append({
            "anonId":             anon_id,
            "name":               identity.name(anon_id),
            "lmsUserId":          identity.lms_user_id(anon_id),
            "partnerName":        grade.get("partnerName") or sd.get("partnerName") or "?",
            "writingScore":       grade.get("writingScore") or 0,
            "discussionScore":    grade.get("discussionScore") or 0,
            "writingFeedback":    grade.get("writingFeedback") or "",
            "discussionFeedback": grade.get("discussionFeedback") or "",
            "overallNote":        grade.get("overallNote") or "",
            "hasWriting":         bool(grade.get("hasWriting")),
            "hasDiscussion":      bool(grade.get("hasDiscussion")),
            "error":              grade.get("error") or "",
            "takeaway":           grade.get("takeaway") or sd.get("takeaway") or "",
            "writing":            sd.get("writing") or [],
            "discussions":        sd.get("discussions") or [],
        })
    rows.sort(key=lambda r: (r["name"].lower(), r["anonId"]))
    return rows


def _badge_class(total: int) -> str:
    if total >= 9:
        return "badge-hi"
    if total >= 8:
        return "badge-mid"
    return "badge-lo"


def _score_select(element_id: str, idx: int, selected: int) -> str:
    options = "".join(
        f'<option value="{v}"{" selected" if v == selected else ""}>{v}</option>'
        for v in (5, 4, 3, 2, 1, 0)
    )
    return f'<select id="{element_id}{idx}" onchange="upd({idx})">{options}</select><span>/5</span>'


def _writing_html(row) -> str:
    if not row["writing"]:
        return '<p class="missing">No writing found. Partner may not have submitted.</p>'
    return "".join(
        f'<div class="rblock"><div class="lbl">{esc(w.get("prompt"))}</div>'
        f'<div class="cnt">{esc(w.get("response") or "(empty)")}</div></div>'
        for w in row["writing"]
    )


def _discussions_html(row) -> str:
    if not row["discussions"]:
        return '<p class="missing">No discussion summaries. Student may not have submitted.</p>'
    blocks = []
    for d in row["discussions"]:
        questions = "".join(f"<li>{esc(q)}</li>" for q in d.get("aiQuestions") or [])
        blocks.append(
            f'<div class="rblock">'
            f'<div class="lbl">{esc(d.get("prompt"))} <span class="iter-badge">{esc(d.get("iterations", 0))} iter</span></div>'
            f'<div class="lbl">Partner\'s writing discussed:</div>'
            f'<div class="cnt dim">{esc(d.get("partnerWriting") or "(empty)")}</div>'
            f'<div class="lbl">AI questions:</div><ul>{questions}</ul>'
            f'<div class="lbl">Discussion summary:</div>'
            f'<div class="cnt">{esc(d.get("summary") or "(empty)")}</div></div>'
        )
    return "".join(blocks)


def _student_card(idx: int, row: dict) -> str:
    total = row["writingScore"] + row["discussionScore"]
    no_data = "" if row["hasWriting"] or row["hasDiscussion"] else '<span class="missing"> (no data)</span>'
    takeaway = (
        f'<div class="sec"><div class="sec-title">Overall Takeaway</div>'
        f'<div class="rblock"><div class="cnt">{esc(row["takeaway"])}</div></div></div>'
        if row["takeaway"] else ""
    )
    note = f'<div class="note">{esc(row["overallNote"])}</div>' if row["overallNote"] else ""
    error = f'<div class="note error">{esc(row["error"])}</div>' if row["error"] else ""
    return f"""
<div class="card" data-name="{esc(row['name'].lower())}">
  <div class="card-hdr" onclick="this.parentElement.classList.toggle('open')">
    <div><span class="card-name">{esc(row['name'])}</span> <span class="card-meta">partner: {esc(row['partnerName'])}</span>{no_data}</div>
    <span class="badge {_badge_class(total)}" id="b{idx}">{total}/10</span>
  </div>
  <div class="card-body">
    <div class="sec"><div class="sec-title">Their Written Reflections (as author)</div>{_writing_html(row)}</div>
    <div class="grade-row"><label>Writing:</label>{_score_select('w', idx, row['writingScore'])}
      <textarea id="wf{idx}" rows="1">{esc(row['writingFeedback'])}</textarea></div>
    <div class="sec"><div class="sec-title">Their Discussion Leadership (as questioner)</div>{_discussions_html(row)}</div>
    <div class="grade-row"><label>Discussion:</label>{_score_select('d', idx, row['discussionScore'])}
      <textarea id="df{idx}" rows="1">{esc(row['discussionFeedback'])}</textarea></div>
    {takeaway}{note}{error}
  </div>
</div>"""


_DISCUSSION_CSS = """
* { box-sizing: border-box; margin: 0; padding: 0; }
body { font-family: -apple-system, BlinkMacSystemFont, 'Segoe UI', sans-serif; background: #f8fafc; color: #1e293b; line-height: 1.5; }
.header { background: var(--primary); color: white; padding: 1.5rem 2rem; }
.header h1 { font-size: 1.5rem; } .header p { opacity: 0.85; font-size: 0.9rem; margin-top: 0.25rem; }
.stats { display: flex; gap: 2rem; padding: 1rem 2rem; background: var(--primary-light); border-bottom: 1px solid #e2e8f0; font-size: 0.9rem; flex-wrap: wrap; }
.stats strong { color: var(--primary); }
.tabs, .controls { padding: 0.75rem 2rem; display: flex; gap: 0.75rem; align-items: center; flex-wrap: wrap; border-bottom: 1px solid #e2e8f0; background: white; }
.tabs button, .controls button { padding: 0.5rem 1rem; border: 1px solid #e2e8f0; border-radius: 6px; background: white; cursor: pointer; font-size: 0.9rem; }
.tabs button.active, .controls button.primary { background: var(--primary); color: white; border-color: var(--primary); }
.controls input { padding: 0.5rem 0.75rem; border: 1px solid #e2e8f0; border-radius: 6px; font-size: 0.9rem; width: 250px; }
.container { padding: 1rem 2rem 3rem; }
.card { background: white; border: 1px solid #e2e8f0; border-radius: 8px; margin-bottom: 1rem; overflow: hidden; }
.card-hdr { display: flex; justify-content: space-between; align-items: center; padding: 0.75rem 1rem; cursor: pointer; }
.card-name { font-weight: 600; } .card-meta { font-size: 0.85rem; color: #64748b; }
.badge { display: inline-flex; padding: 0.25rem 0.75rem; border-radius: 999px; font-weight: 600; font-size: 0.9rem; }
.badge-hi { background: #dcfce7; color: #166534; } .badge-mid { background: #fef9c3; color: #854d0e; } .badge-lo { background: #fee2e2; color: #991b1b; }
.card-body { display: none; padding: 0 1rem 1rem; border-top: 1px solid #e2e8f0; }
.card.open .card-body { display: block; }
.sec { margin-top: 1rem; } .sec-title { font-weight: 600; font-size: 0.85rem; text-transform: uppercase; color: var(--primary); margin-bottom: 0.5rem; }
.rblock { background: #f8fafc; border-radius: 6px; padding: 0.75rem 1rem; margin-bottom: 0.75rem; }
.rblock .lbl { font-size: 0.8rem; color: #64748b; margin-top: 0.25rem; }
.rblock .cnt { font-size: 0.9rem; white-space: pre-wrap; } .rblock .dim { opacity: 0.7; }
.rblock ul { font-size: 0.85rem; margin: 0.25rem 0 0.5rem 1.25rem; }
.grade-row { display: flex; gap: 1rem; align-items: center; flex-wrap: wrap; margin-top: 0.5rem; padding: 0.75rem 1rem; background: var(--primary-light); border-radius: 6px; }
.grade-row textarea { flex: 1; min-width: 250px; padding: 0.4rem; border: 1px solid #e2e8f0; border-radius: 4px; font-family: inherit; }
.iter-badge { display: inline-block; background: var(--primary); color: white; border-radius: 999px; padding: 0.1rem 0.5rem; font-size: 0.75rem; font-weight: 600; }
.note { font-size: 0.85rem; color: #64748b; font-style: italic; padding: 0.5rem 1rem; background: #fffbeb; border-radius: 6px; margin-top: 0.5rem; }
.note.error { background: #fee2e2; }
.missing { color: #dc2626; font-style: italic; font-size: 0.85rem; }
table { width: 100%; border-collapse: collapse; font-size: 0.9rem; background: white; }
th, td { padding: 0.5rem 0.75rem; border-bottom: 1px solid #e2e8f0; text-align: left; }
.st-new { color: #2563eb; font-weight: 600; } .st-changed { color: #d97706; font-weight: 600; } .st-unchanged { color: #64748b; }
"""

_DISCUSSION_JS = """
function esc(s) {
  return String(s == null ? '' : s)
    .replace(/&/g, '&amp;').replace(/</g, '&lt;').replace(/>/g, '&gt;')
    .replace(/"/g, '&quot;').replace(/'/g, '&#39;').replace(/`/g, '&#96;');
}
function val(id) { return +(document.getElementById(id).value || 0); }
function total(i) { return val('w' + i) + val('d' + i); }
function showTab(name) {
  document.getElementById('tab-grading').style.display = name === 'grading' ? '' : 'none';
  document.getElementById('tab-changes').style.display = name === 'changes' ? '' : 'none';
  document.getElementById('btn-grading').classList.toggle('active', name === 'grading');
  document.getElementById('btn-changes').classList.toggle('active', name === 'changes');
  if (name === 'changes') renderChanges();
}
function setAll(open) {
  document.querySelectorAll('.card').forEach(function(c) { c.classList.toggle('open', open); });
}
function filterStudents() {
  var q = document.getElementById('search').value.toLowerCase();
  document.querySelectorAll('.card').forEach(function(c) {
    c.style.display = c.dataset.name.indexOf(q) >= 0 ? '' : 'none';
  });
}
function upd(i) {
  var t = total(i);
  var b = document.getElementById('b' + i);
  b.textContent = t + '/10';
  b.className = 'badge ' + (t >= 9 ? 'badge-hi' : t >= 8 ? 'badge-mid' : 'badge-lo');
  stats();
}
function stats() {
  var sum = 0, c10 = 0, c9 = 0, clo = 0;
  for (var i = 0; i < SD.length; i++) {
    var t = total(i);
    sum += t;
    if (t === 10) c10++; else if (t === 9) c9++; else clo++;
  }
  document.getElementById('avg-score').textContent = SD.length ? (sum / SD.length).toFixed(1) : '0';
  document.getElementById('c10').textContent = c10;
  document.getElementById('c9').textContent = c9;
  document.getElementById('clo').textContent = clo;
}
function changeStatus(i) {
  var current = CANVAS_SCORES[String(SD[i].lmsUserId)];
  if (current == null) return 'new';
  return Number(current) === total(i) ? 'unchanged' : 'changed';
}
function renderChanges() {
  var counts = {'new': 0, changed: 0, unchanged: 0};
  var html = '<table><thead><tr><th>Student</th><th>Canvas score</th><th>Dashboard total</th><th>Status</th></tr></thead><tbody>';
  for (var i = 0; i < SD.length; i++) {
    var st = changeStatus(i);
    counts[st]++;
    var current = CANVAS_SCORES[String(SD[i].lmsUserId)];
    html += '<tr><td>' + esc(SD[i].name) + '</td><td>' + (current == null ? '-' : esc(current)) + '</td>' +
      '<td>' + total(i) + '/10</td><td class="st-' + st + '">' + st + '</td></tr>';
  }
  html += '</tbody></table>';
  document.getElementById('changes-table').innerHTML = html;
  document.getElementById('changes-summary').textContent =
    'New: ' + counts['new'] + ' / Changed: ' + counts.changed + ' / Unchanged: ' + counts.unchanged;
}
function refreshScores() {
  if (!CANVAS.baseUrl || !CANVAS.assignmentId) { alert('No Canvas assignment configured.'); return; }
  var token = prompt('Canvas API token (not stored):');
  if (!token) return;
  var url = CANVAS.baseUrl + '/api/v1/courses/' + CANVAS.courseId + '/assignments/' + CANVAS.assignmentId + '/submissions?per_page=100';
  var fresh = {};
  function page(u) {
    return fetch(u, {headers: {'Authorization': 'Bearer ' + token}}).then(function(resp) {
      if (!resp.ok) throw new Error('Canvas returned ' + resp.status);
      var next = (resp.headers.get('Link') || '').match(/<([^>]+)>;\\s*rel="next"/);
      return resp.json().then(function(subs) {
        subs.forEach(function(s) { if (s.score != null) fresh[String(s.user_id)] = s.score; });
        return next ? page(next[1]) : null;
      });
    });
  }
  page(url).then(function() { CANVAS_SCORES = fresh; renderChanges(); })
    .catch(function(e) { alert('Refresh failed: ' + e.message); });
}
function downloadGrades() {
  var grades = SD.map(function(s, i) {
    return {
      anonId: s.anonId, studentName: s.name, lmsUserId: s.lmsUserId,
      writingScore: val('w' + i), discussionScore: val('d' + i),
      writingFeedback: document.getElementById('wf' + i).value,
      discussionFeedback: document.getElementById('df' + i).value,
      overallNote: s.note, totalScore: total(i)
    };
  });
  var blob = new Blob([JSON.stringify(grades, null, 2)], {type: 'application/json'});
  var a = document.createElement('a');
  a.href = URL.createObjectURL(blob);
  a.download = GRADES_FILENAME;
  a.click();
}
stats();
"""


def render_discussion_dashboard(course, assignment_key: str, disc: dict, rows: list,
                                current_scores=None, assignment_id=None,
                                canvas_origin: str = "") -> str:
    title = disc.get("title") or assignment_key
    color = course.color
    light = LIGHT_COLORS.get(color, "#eef2ff")
    sd = [
        {
            "i":         i,
            "anonId":    r["anonId"],
            "name":      r["name"],
            "lmsUserId": r["lmsUserId"],
            "note":      r["overallNote"],
        }
        for i, r in enumerate(rows)
    ]
    canvas = {
        "baseUrl":      canvas_origin,
        "courseId":     course.course_id,
        "assignmentId": assignment_id,
    }
    cards = "".join(_student_card(i, r) for i, r in enumerate(rows))
    return f"""<!DOCTYPE html>
<html lang="en">
<head>
<meta charset="UTF-8">
<meta name="viewport" content="width=device-width, initial-scale=1.0">
<title>{esc(title)} &middot; Discussion Dashboard</title>
<style>:root {{ --primary: {esc(color)}; --primary-light: {esc(light)}; }}{_DISCUSSION_CSS}</style>
</head>
<body>
<div class="header">
  <h1>{esc(title)} &middot; Grading Dashboard</h1>
  <p>{esc(course.name)} &middot; Generated {esc(_timestamp())}</p>
</div>
<div class="stats">
  <div>Students: <strong>{len(rows)}</strong></div>
  <div>Avg Score: <strong id="avg-score">-</strong>/10</div>
  <div>Score 10: <strong id="c10">-</strong></div>
  <div>Score 9: <strong id="c9">-</strong></div>
  <div>Score &le;8: <strong id="clo">-</strong></div>
</div>
<div class="tabs">
  <button id="btn-grading" class="active" onclick="showTab('grading')">Grading</button>
  <button id="btn-changes" onclick="showTab('changes')">Grade Changes</button>
</div>
<div id="tab-grading">
  <div class="controls">
    <input type="text" id="search" placeholder="Search students..." oninput="filterStudents()">
    <button onclick="setAll(true)">Expand All</button>
    <button onclick="setAll(false)">Collapse All</button>
    <button class="primary" onclick="downloadGrades()">Download Grades JSON</button>
  </div>
  <div class="container" id="students">{cards}
  </div>
</div>
<div id="tab-changes" style="display:none">
  <div class="controls">
    <span id="changes-summary"></span>
    <button onclick="refreshScores()">Refresh from Canvas</button>
  </div>
  <div class="container" id="changes-table"></div>
</div>
<script>
var SD = {script_json(sd)};
var CANVAS_SCORES = {script_json(current_scores or {})};
var CANVAS = {script_json(canvas)};
var GRADES_FILENAME = {script_json(f"{course.code}-{assignment_key}-grades.json")};
{_DISCUSSION_JS}
</script>
</body>
</html>
"""


def fetch_current_scores(lms, course, assignment):
    """Return ``({str(user_id): score}, assignment_id)`` from Canvas."""
    assignment_id = assignment.canvas_id
    if assignment.is_quiz:
        assignment_id = lms.get_quiz_assignment_id(course.course_id, assignment.canvas_id)
    scores = {}
    for sub in lms.list_submissions(course.course_id, assignment_id):
        if sub.get("score") is not None:
            scores[str(sub["user_id"])] = sub["score"]
    return scores, assignment_id


# ── Whole course ─────────────────────────────────────────────────────────────

def generate_dashboards(course, data, lms=None) -> dict:
    """Write the course overview and every discussion dashboard.

    With an *lms* client, current Canvas scores are embedded in each
    discussion dashboard's Grade Changes tab.
    """
    analysis = load_json(data.analysis(course.code))
    identity = IdentityMap.load(data.id_mapping(course.code), course.prefix)
    if not analysis or not len(identity):
        raise RuntimeError(
            f"No analysis data found. Run analyze first: "
            f"--action=analyze --course={course.code}"
        )

    overview = build_overview_data(course, analysis, identity)
    path = data.course_dashboard(course.code)
    save_text(path, render_course_dashboard(overview, course.color))
    logger.info("Dashboard: %s (%d students, %d assignments)",
                path, len(overview["profiles"]), len(overview["assignments"]))

    counts = {"dashboards": 1, "discussions": 0}
    origin = course.canvas_base_url.split("/courses/")[0]
    for key, disc in (analysis.get("discussions") or {}).items():
        current, assignment_id = {}, None
        if lms is not None:
            try:
                current, assignment_id = fetch_current_scores(lms, course, course.assignment(key))
            except Exception as e:
                logger.warning("  Could not fetch Canvas scores for %s: %s", key, e)

        rows = discussion_rows(disc, identity)
        html = render_discussion_dashboard(
            course, key, disc, rows,
            current_scores=current, assignment_id=assignment_id, canvas_origin=origin,
        )
        path = data.discussion_dashboard(course.code, key)
        save_text(path, html)
        counts["discussions"] += 1
        logger.info("  Discussion dashboard: %s", path)
    return counts
